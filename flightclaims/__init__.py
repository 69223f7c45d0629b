"""
FlightClaims - claim lifecycle orchestration engine
"""
