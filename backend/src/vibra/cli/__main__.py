"""CLI entry point for vibra.cli module.

Enables execution via: python -m vibra.cli (seeds prompts)
Other commands: python -m vibra.cli.check_providers
"""

from vibra.cli.seed_prompts import main

if __name__ == "__main__":
    main()
