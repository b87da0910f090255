"""Infrastructure layer: polling, pipelines, rendering and the remote channel."""
