"""
System tests against the real Home Assistant / MQTT bridge stack.

Tests here run against live containers started with docker compose:
1. the session-wide ``stack`` fixture brings every service up and waits
   for its readiness line
2. entity registrations and broker traffic are scraped from the logs
3. tests poll that state until the bridge has done its work
4. the stack is torn down (volumes included) at the end of the session

Point the harness at the compose project before running:
    E2E_RUN_STACK=1 E2E_PROJECT_DIR=end-to-end-testing pytest system_tests/ -v

The Home Assistant configuration mounted by the compose file must enable
the MQTT integration against the ``mosquitto`` service.
"""
