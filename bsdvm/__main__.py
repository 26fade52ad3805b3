from bsdvm.cli import main

raise SystemExit(main())
