"""
Runtime layer - publisher identity assignment, process supervision,
shutdown coordination and the client / server roles.
"""
