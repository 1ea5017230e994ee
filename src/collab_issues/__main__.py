"""Allow `python -m collab_issues`."""

from collab_issues.cli import main

raise SystemExit(main())
