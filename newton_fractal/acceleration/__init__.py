"""CPU, multi-threaded and GPU render backends and the render thread."""
