"""Telephony audio helpers for Twilio Media Streams.

Twilio carries G.711 mu-law at 8kHz, base64-encoded inside JSON frames. The
speech services on either side of a call may expect other encodings; the
conversions live here so the call orchestrator only ever handles raw frames.
"""
