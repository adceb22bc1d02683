"""Allow running the exporter with ``python -m misskey_exporter``."""

import sys

from misskey_exporter.exporter import main

sys.exit(main())
