"""pricewatch: live prices from streaming and polled feeds, with threshold alerts."""
