"""Showya: community events, ticketing and payouts."""
