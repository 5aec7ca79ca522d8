"""Command-line surface for kubeforward."""
