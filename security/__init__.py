"""
Request guard state: rate limiting, block list, security events, anomaly analysis.
"""
