"""
Services for the Instagram connection flow and integration status checks.
"""
import logging

# httpx logs every request URL at INFO; Graph and token-exchange URLs carry credentials
logging.getLogger("httpx").setLevel(logging.WARNING)
