"""
learnflow - HTTP API

FastAPI applications of the lms and reco services.
"""
