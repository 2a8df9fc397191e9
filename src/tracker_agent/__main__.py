"""Allow running as ``python -m tracker_agent``."""

from tracker_agent.cli.main import app

if __name__ == "__main__":
    app()
