"""Application services: provider orchestration and prompt execution."""
