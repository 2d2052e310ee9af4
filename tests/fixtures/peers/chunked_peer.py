"""Peer that writes its response in several small pieces."""

import json
import sys
import time

sys.stdout.write('{"type": "initial')
sys.stdout.flush()
time.sleep(0.05)
sys.stdout.write('ized"}\n')
sys.stdout.flush()

sys.stdin.readline()
response = json.dumps({"content": [{"type": "text", "text": "pieces"}]}) + "\n"
for i in range(0, len(response), 7):
    sys.stdout.write(response[i:i + 7])
    sys.stdout.flush()
    time.sleep(0.01)
time.sleep(60)
