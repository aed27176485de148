"""Allow ``python -m load_scenario``."""

from load_scenario.cli import main

raise SystemExit(main())
