# fleetdesk/core/dispatch/__init__.py
"""
Dispatch domain.

- ``status``  : DispatchStatus, the transition table and assignment rollup
- ``models``  : Dispatch / Assignment records and their document mapping
- ``workflow``: status moves that persist and then fan out StatusChanged
- ``availability``: which drivers and trucks are already booked on a day

Everything here talks to storage only through the DocumentStore port.
"""
