"""Chat orchestration backend for the planner assistant."""
