from pymotum.cli import main

raise SystemExit(main())
