import sys

from redis_exporter.main import main

sys.exit(main())
