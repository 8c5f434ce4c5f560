import subprocess
import time
import sys
import os

# Configuration
PYTHON_EXEC = sys.executable
REPLICA_HOST_PORT = 9000
NODE_PORT = 8000

processes = []

def start_replica_host():
    print(f"Starting Replica Host on port {REPLICA_HOST_PORT}...")
    p = subprocess.Popen(
        [PYTHON_EXEC, "-m", "uvicorn", "network.replica_host:build_app", "--factory",
         "--port", str(REPLICA_HOST_PORT)],
        cwd=os.getcwd()
    )
    processes.append(p)

def start_node(port):
    print(f"Starting ledger node on port {port}...")

    env = os.environ.copy()
    env["REPLICA_HOST_URL"] = f"http://127.0.0.1:{REPLICA_HOST_PORT}"

    p = subprocess.Popen(
        [PYTHON_EXEC, "-m", "uvicorn", "api.server:app", "--port", str(port)],
        env=env,
        cwd=os.getcwd()
    )
    processes.append(p)

def main():
    try:
        # 1. Start replica host
        start_replica_host()
        time.sleep(2)

        # 2. Start the ledger node against it
        start_node(NODE_PORT)

        print("\nNetwork is running! Press Ctrl+C to stop everything.\n")

        while True:
            time.sleep(1)

    except KeyboardInterrupt:
        print("\nShutting down network...")
        for p in processes:
            p.terminate()
        print("Goodbye!")

if __name__ == "__main__":
    main()
