"""
SLA Engine Module
=================

Bounded Context for service level agreement tracking.

Responsibilities:
- Select the SLA rule that applies to a ticket
- Calculate due dates in calendar time or business hours
- Track the breach state machine and raise breach events
- Extend and refresh SLA due dates on request
- Periodically sweep open tickets for state changes
- Hot-reload the rules catalogue via watchdog
"""

__version__ = "1.0.0"
