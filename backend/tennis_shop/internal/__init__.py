"""
외부 연동(카카오 알림) 및 운영용 CLI. / External integrations and operator CLIs.
"""
