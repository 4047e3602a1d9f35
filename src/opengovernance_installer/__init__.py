"""
OpenGovernance Installer

Provisions a Kubernetes cluster and installs OpenGovernance onto it with Helm

Supports the following providers:

* AWS: Deploys an EKS cluster with Terraform/OpenTofu, installs the Helm chart and optionally fronts it with an ALB
Ingress using an ACM certificate. The ``create-ingress`` and ``update-app`` commands re-run the Ingress and
certificate steps against an existing installation, sharing state through ``ingress_details.env``.

* DIGITALOCEAN: Creates a DOKS cluster with doctl, installs ingress-nginx and cert-manager, and issues a Let's Encrypt
certificate for the chosen hostname.

* KIND: Creates a local Kind cluster and exposes the application through port-forwarding.


"""

__version__ = '0.1.0'
