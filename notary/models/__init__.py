# ORM models and API schemas
