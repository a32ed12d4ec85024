"""Package entry point for ``python -m transcript_review``.

WHY: Operators start the HTTP service or run a one-off local transcription
with the same command.

HOW: Delegates to the CLI's main(), which dispatches on the subcommand.
"""

from transcript_review.cli import main

if __name__ == "__main__":
    main()
