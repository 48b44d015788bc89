"""Allow ``python -m meshstore``."""

from meshstore import cli

raise SystemExit(cli.main())
