from webspyder.cli import main

raise SystemExit(main())
