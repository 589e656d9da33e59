"""
Voice Gate Tests
================

This package contains unit tests for the voice-gated microphone pipeline.

Test Structure:
- test_config.py: Tests for configuration management
- test_acquisition.py: Tests for raw stream acquisition (sounddevice mocked)
- test_engine.py: Tests for the audio engine clock and parameter ramps
- test_graph.py: Tests for graph nodes and conditioning profiles
- test_hysteresis.py: Tests for the shared voice state machine
- test_heuristic_vad.py: Tests for the energy/spectrum detector
- test_model_vad.py: Tests for the Silero-backed detector (model mocked)
- test_gate.py: Tests for gate ramps
- test_reconciler.py: Tests for change classification and rebuild serialization
- test_publisher.py: Tests for track publication
- test_pipeline.py: End-to-end controller scenarios
- test_notifications.py: Tests for notification cues
- test_worker.py: Tests for the queue worker base and shutdown signal
- test_cli.py: Tests for the command-line entry point and local transport
"""
