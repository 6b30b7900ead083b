"""Worker process entry point for sandboxed scripts.

Started by ``script_sandbox.execute_script`` as
``python -m requiety.services.api_testing.script_worker``.
"""

import sys

from requiety.services.api_testing.script_sandbox import run_job


def main() -> int:
    channel = sys.stdout
    # Stray writes must not corrupt the channel
    sys.stdout = sys.stderr
    return run_job(sys.stdin, channel)


if __name__ == "__main__":
    sys.exit(main())
