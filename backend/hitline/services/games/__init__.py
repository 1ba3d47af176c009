"""Game domain services: the turn/steal engine and its helpers.

Placement checks, guess matching, song drawing and the steal-phase types are
plain Python with no Flask dependency. The engine and snapshot projector use
the app context for config, the database session and the notification bus,
and are what HTTP routes and socket handlers call into.
"""
