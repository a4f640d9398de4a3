"""Allow running the dispatcher CLI as a module: python -m llm_dispatch."""

import sys

from llm_dispatch.runner import main

if __name__ == "__main__":
    sys.exit(main())
