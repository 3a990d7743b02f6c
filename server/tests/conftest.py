# The server modules are flat (main, equivalence, rule_engine, ...); put their directory on sys.path
import os
import sys

TESTS_DIR = os.path.dirname(os.path.abspath(__file__))
SERVER_DIR = os.path.dirname(TESTS_DIR)
if SERVER_DIR not in sys.path:
    sys.path.insert(0, SERVER_DIR)
