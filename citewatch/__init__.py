"""
Citewatch - AI Search Visibility Tracker

Tracks where a domain shows up for a set of keywords across:
1. Traditional organic results
2. AI Overview citations
3. AI Mode (conversational search) references

and reconciles the three into one snapshot per keyword, enriched with a
Claude-based qualitative analysis (sentiment, content gap, strategy).
"""

__version__ = "0.1.0"
