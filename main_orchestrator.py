# main_orchestrator.py
import sys

from tapan_e2e.main import main

if __name__ == "__main__":
    # python main_orchestrator.py run public_tracking
    sys.exit(main(sys.argv[1:] or ["run"]))
