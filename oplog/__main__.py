"""Allow ``python -m oplog``."""

from oplog.main import main

raise SystemExit(main())
