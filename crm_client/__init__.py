"""Client half of the lead pipeline: API client, query cache, optimistic mutations, realtime."""
