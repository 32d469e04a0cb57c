"""Pure conversation engine: entities, intents, pipelines and decisions."""
