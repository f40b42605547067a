"""
Higher-level methods to reconcile units.

Each public function in this module should:

- perform a complete task, as needed by a script or lifecycle driver
- avoid non-idempotent calls unless required by a prior state change
- create and manage contexts (locks, connections) for any resources needed by plumbing
"""
