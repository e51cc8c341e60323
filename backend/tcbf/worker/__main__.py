import asyncio
import sys

from tcbf.worker.worker_main import main

sys.exit(asyncio.run(main()))
