"""
SlotScribe CLI entrypoint.

This module provides the console_script entrypoint for the slotscribe package.
"""


def main():
    """SlotScribe CLI entrypoint."""
    from slotscribe.commands import slotscribe_app

    slotscribe_app()


if __name__ == "__main__":
    main()
