"""Command-line interface for the RPA agent."""

__all__ = ["main"]


def main(args=None):
    # Imported lazily so `python -m rpa_agent.cli` does not import the runtime twice.
    from rpa_agent.cli.main import main as _main
    return _main(args)
