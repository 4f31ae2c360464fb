"""Services: prepare orchestration and the command-line interface."""
