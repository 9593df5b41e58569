"""On-device bootstrap stages as explicit state machines.

Each transition carries the shell fragment the device runs and a Python
equivalent used to rehearse the stage against a scratch root tree.
"""
