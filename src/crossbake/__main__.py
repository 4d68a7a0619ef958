from crossbake.cli import main

raise SystemExit(main())
