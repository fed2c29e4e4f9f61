"""
Hinan: Evacuation-Guidance Protocol Simulator
=============================================

A Coordinator ("vApp") that plans straight-line routes toward a shelter and
tracks evacuation state for a mobile Agent, using a Backend for map and
shelter data. All three parties talk over WebSocket connections.

Subpackages:
- hinan.core: coordinates, shelters, geometry and the route planner
- hinan.platform: wire codec, session registry, configuration
- hinan.coordinator: per-session state, protocol engine, regeneration timer
"""
