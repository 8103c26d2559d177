"""Order service: transactional order creation over a relational datastore."""
