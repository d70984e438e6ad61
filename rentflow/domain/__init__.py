"""Pure domain rules: state machines and the cancellation policy evaluator."""
