"""Allow ``python -m vaultrag.cli`` execution."""

from vaultrag.cli.main import main

main()
