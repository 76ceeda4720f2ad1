"""
Trip planner service package for RouteWise.

Structure:
- app.main: FastAPI app and lifecycle wiring.
- app.caching: Tiered cache, domain TTL policy, response cache and admin routes.
"""
