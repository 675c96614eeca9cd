# Core infrastructure - configuration, database, errors, logging, middleware
